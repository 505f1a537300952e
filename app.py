"""Development server: ``python app.py`` serves the portal on port 3000."""
from __future__ import annotations

import os

from docportal_ext import create_app

app = create_app()


if __name__ == "__main__":
    app.run(host=os.getenv("HOST", "0.0.0.0"), port=int(os.getenv("PORT", "3000")), use_reloader=False)
