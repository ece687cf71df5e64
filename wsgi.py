"""
WSGI entry point for production deployment.
"""

import os

from dotenv import load_dotenv

load_dotenv(".env")

from portfolio_analytics.factory import create_app  # noqa: E402

# Create application instance
app = create_app()

if __name__ == "__main__":
    # For development
    port = int(os.environ.get("PORT", 5000))
    app.run(host="0.0.0.0", port=port, debug=app.config.get("DEBUG", False), threaded=True)
