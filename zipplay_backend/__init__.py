"""Backend for ZipPlay: publish uploaded ZIP bundles as playable web content.

This package intentionally keeps FastAPI route handlers thin:
- Zip Slip safe extraction of uploads into one directory per upload
- entry document lookup (index.html, anywhere in the tree)
- in-memory registry of published uploads + TTL cleanup

Security note:
Upload IDs are UUID4s and double as directory names and URL segments. Validate
them strictly and never log or expose filesystem paths in responses.
"""
