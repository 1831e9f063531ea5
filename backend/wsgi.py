"""
WSGI entry point
"""
import os

from ispdiag import create_app, celery  # noqa: F401  (celery -A wsgi.celery worker)
import ispdiag.tasks  # noqa: F401  registers the sweep tasks

# Use environment-provided key matching the config map or default to 'production'
app = create_app(os.environ.get('FLASK_ENV', 'production'))

if __name__ == '__main__':
    app.run(host='0.0.0.0', port=5000)
