# backend/wsgi.py
from vouchernet import create_app

app = create_app()
