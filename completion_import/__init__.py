"""Import activity completions into a Moodle site from CSV / XLSX files."""

__version__ = "0.1.0"
