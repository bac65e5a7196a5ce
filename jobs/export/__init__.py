from .csv_exporter import CsvExporter, CsvExportLoop

__all__ = ["CsvExporter", "CsvExportLoop"]
