# backend/wsgi.py
from invictos import create_app

app = create_app()
