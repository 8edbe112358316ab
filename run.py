#!/usr/bin/env python3
"""Entry point for the print proxy service."""
import os
from printproxy import create_app

app = create_app(os.environ.get("FLASK_ENV", "default"))

if __name__ == "__main__":
    # Listen on localhost unless told otherwise
    host = app.config["HOST"]
    port = app.config["PORT"]
    debug = os.environ.get("FLASK_ENV", "default") == "development"

    print(f"Starting print proxy on http://{host}:{port}")
    app.run(host=host, port=port, debug=debug, threaded=True, use_reloader=False)
