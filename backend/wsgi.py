"""WSGI configuration for production deployment."""
import os
from dotenv import load_dotenv
from session_engine import create_app

load_dotenv()

# Create Flask application instance
app = create_app(os.getenv('FLASK_ENV', 'production'))

if __name__ == "__main__":
    app.run()
