"""
Tagmail Starter App
===================

A local Flask app with every Tagmail module enabled. The campaign
scheduler runs in a background thread of this process.

Run with:
    python app.py

Visit:
    http://localhost:5000/health              - Store and scheduler status
    http://localhost:5000/admin/dashboard     - Admin stats (after POST /admin/login)
"""

import logging
import os

from flask import Flask
from tagmail import Tagmail, Config

logging.basicConfig(
    level=os.getenv('LOG_LEVEL', 'INFO'),
    format='%(asctime)s %(levelname)s %(name)s: %(message)s',
)

app = Flask(__name__)
app.config['SECRET_KEY'] = Config.SECRET_KEY or 'dev-secret-key-change-in-production'
app.config['DB_DIR'] = os.path.join(os.path.dirname(os.path.abspath(__file__)), 'databases')

# Registers all blueprints and starts the scheduler
tagmail = Tagmail(app)


if __name__ == '__main__':
    print("\n" + "=" * 60)
    print("Tagmail Starter App")
    print("=" * 60)
    print(f"Health:          http://localhost:{Config.port}/health")
    print(f"Dashboard:       http://localhost:{Config.port}/admin/dashboard")
    print(f"Store:           {app.config['TAGMAIL_DB']}")
    print("=" * 60 + "\n")

    try:
        # reloader would start a second scheduler
        app.run(host='127.0.0.1', port=Config.port, debug=True, use_reloader=False)
    finally:
        tagmail.shutdown()
