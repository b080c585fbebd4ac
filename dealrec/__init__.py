"""Deal personalization engine: vector and graph recommendation pathways."""

__version__ = "0.1.0"
