from .logger_export import RawTable, read_logger_export

__all__ = ["RawTable", "read_logger_export"]
