"""Student voting system services."""
