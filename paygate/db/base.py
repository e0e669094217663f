# paygate/db/base.py
from sqlalchemy.orm import declarative_base

# ------------------------------------------------------------
# BASE DICHIARATIVA SQLALCHEMY
# ------------------------------------------------------------
Base = declarative_base()

# ------------------------------------------------------------
# IMPORT MODELLI PER REGISTRAZIONE ALEMBIC / create_all
# ------------------------------------------------------------
# NB: questi import servono a fare in modo che Alembic e
# Base.metadata.create_all "vedano" tutte le tabelle.
# Se in futuro aggiungiamo nuovi modelli, vanno importati qui.
from paygate.models import purchase_intent, crypto_payment, license  # noqa: E402,F401
