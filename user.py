from __future__ import annotations


class User:
    """A registered library member. ``contact_info`` is unique across members."""

    def __init__(self, name: str, contact_info: str, id: str | None = None) -> None:
        self.id = id
        self.name = name.strip()
        self.contact_info = contact_info.strip()

    def __str__(self) -> str:  # pragma: no cover - string formatting trivial
        return f"{self.name} <{self.contact_info}>"

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "contact_info": self.contact_info}

    @staticmethod
    def from_dict(data: dict) -> "User":
        return User(id=data.get("id"), name=data["name"], contact_info=data["contact_info"])
