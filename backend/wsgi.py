# backend/wsgi.py
# Entry point for `flask --app wsgi` and WSGI servers.
from repairdesk import create_app

app = create_app()

if __name__ == "__main__":
    app.run(debug=True)
