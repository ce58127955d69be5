"""
WSGI entry point — gunicorn serves `wsgi:app`; `python wsgi.py` runs the dev server.
"""
import os

from app import create_app

app = create_app()

if __name__ == '__main__':
    app.run(host='0.0.0.0', port=int(os.getenv('PORT', 8080)))
