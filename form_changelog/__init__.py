"""Spreadsheet -> Liquibase MongoDB changelog compiler."""

__version__ = "0.1.0"
