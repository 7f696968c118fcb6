"""
STO domain - reservation portal session, scraping and sync

Modules:
- client.py / parser.py: portal HTTP and HTML extraction
- session_store.py: in-memory session with encrypted durable copy
- auth_flow.py: credential + emailed-code login
- scraper.py: list and detail pages
- sync.py: snapshot diff and booking persistence
- service.py: wires the above onto the FastAPI app
- router.py: /sto endpoints
"""

__all__ = []
