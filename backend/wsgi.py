# backend/wsgi.py
from labtrace import create_app

app = create_app()
