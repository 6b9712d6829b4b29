"""
MCP SQL Server Tools

MCP server for SQL Server over stdio.
Provides tools for listing databases, tables, columns and stored procedures,
reading procedure definitions, and executing queries and procedures.
"""

__version__ = "1.0.0"
