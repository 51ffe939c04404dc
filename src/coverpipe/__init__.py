"""coverpipe - coverage instrumentation, aggregation, reporting and upload pipeline."""

__version__ = "0.1.0"
