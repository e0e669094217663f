# scripts/import_keys.py
"""
Import manuale di chiavi licenza da file di testo (una chiave per riga).

    python scripts/import_keys.py keys.txt monthly [--user 123456789012345678]
"""
import os, sys
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

import argparse

from dotenv import load_dotenv

load_dotenv()  # carica .env dalla root
if not os.getenv("DATABASE_URL"):
    raise RuntimeError("DATABASE_URL mancante")

from paygate.core.catalog import build_products
from paygate.crud import license_crud
from paygate.db.session import SessionLocal


def read_keys(path: str):
    with open(path, encoding="utf-8") as fh:
        return [line.strip() for line in fh if line.strip()]


def main():
    parser = argparse.ArgumentParser(description="Import manuale chiavi licenza")
    parser.add_argument("file")
    parser.add_argument("product_type")
    parser.add_argument("--user", dest="user_id", default=None)
    parser.add_argument("--by", dest="added_by", default="cli")
    args = parser.parse_args()

    products = build_products()
    product = products.get(args.product_type)
    if product is None:
        sys.exit(f"Product type non valido. Usa: {', '.join(products)}")

    keys = read_keys(args.file)
    if not keys:
        sys.exit("Nessuna chiave valida nel file.")

    db = SessionLocal()
    try:
        created, duplicates = license_crud.import_keys(
            db,
            keys,
            args.product_type,
            user_id=args.user_id,
            provider_product_id=product.provider_product_id,
            added_by=args.added_by,
        )
        if duplicates:
            sys.exit("Chiavi già presenti:\n" + "\n".join(duplicates))
        print(f"Import completato. Chiavi create: {len(created)}. Scadenza: {created[0].expiration_date:%Y-%m-%d}.")
    finally:
        db.close()


if __name__ == "__main__":
    main()
