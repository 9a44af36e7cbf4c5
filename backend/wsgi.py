# backend/wsgi.py
from gridledger import create_app

app = create_app()
