# main.py: FastAPI para recepção de webhooks de assinatura (Hotmart / Doppus)
from fastapi import FastAPI

# ====== IMPORTS INTERNOS ======
from .config import logger
from .database import SessionLocal, init_db
from . import plans, webhooks
from .utils import utcnow


# 🚀 1. Cria o app primeiro
app = FastAPI(title="Webhooks de Assinatura")

# 🚀 2. Cria o banco, semeia o catálogo e inclui routers
init_db()
_db = SessionLocal()
try:
    plans.seed_mappings(_db)
finally:
    _db.close()

app.include_router(webhooks.router)

logger.info("🧭 Webhooks ativos: /webhook/hotmart, /api/webhooks/hotmart, /webhook/doppus, /api/webhooks/doppus")


@app.get("/health")
async def health():
    return {"ok": True, "time": utcnow().isoformat()}
