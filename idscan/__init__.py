"""ID document scan service.

A Kafka-triggered pipeline that runs Tesseract OCR on photographs of
identity documents and parses the recognized text into structured
fields (name, birth date, national ID number).
"""

__version__ = "1.0.0"
