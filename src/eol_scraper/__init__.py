"""EOL scraping service.

Content-extraction worker for the end-of-life part checker: pulls readable
text out of manufacturer web pages (HTML, PDF, plain text) and reports it
back to the caller through a callback URL.
"""

__version__ = "0.1.0"
