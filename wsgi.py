"""
WSGI entry point for the Vaulton development backend
"""
from vaulton.config import load_config
from vaulton.dev_backend import create_dev_app

cfg = load_config()
app = create_dev_app(cfg=cfg)

# Gunicorn/uWSGI compatibility
application = app

if __name__ == "__main__":
    app.run(host=cfg["DEV_BACKEND_HOST"], port=cfg["DEV_BACKEND_PORT"], debug=False)
