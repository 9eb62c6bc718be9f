# wsgi.py
# Entry point for gunicorn (`gunicorn wsgi:app`) and `flask --app wsgi db upgrade`.

import atexit

from chat_backend import create_app, shutdown_app

app = create_app()
atexit.register(shutdown_app, app)

if __name__ == "__main__":
    # Local dev convenience; production uses gunicorn
    app.run(debug=True, port=int(app.config.get("PORT", 3009)))
