"""Floor plan maps with placed objects: SQLite storage, a JSON WSGI service and a command-line tool."""

__version__ = "0.1.0"