# main.py
from __future__ import annotations

# ------------------------------------------------------------
# ISTANZA APPLICAZIONE (uvicorn main:app)
# ------------------------------------------------------------
from paygate.main import create_app

app = create_app()

# ------------------------------------------------------------
# AVVIO LOCALE
# ------------------------------------------------------------
if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
