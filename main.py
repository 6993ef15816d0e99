"""
Local entry point: python main.py
"""
from app.main import run

if __name__ == "__main__":
    # This lets you run the relay locally with Uvicorn
    # For production deployment, use a proper ASGI server like Gunicorn with the app.main:production_app factory
    run()
