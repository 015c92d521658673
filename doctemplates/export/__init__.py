from .record import RECORD_SCHEMA_VERSION, compose_record

__all__ = ["RECORD_SCHEMA_VERSION", "compose_record"]
