"""Library App - Utilities Package

- Input validators (validators.py)
- CLI output rendering (ui_helpers.py)
"""
