"""Gunicorn entry point: gunicorn wsgi:app"""
from payables import create_app

app = create_app()

if __name__ == "__main__":
    app.run()
