from fastapi import FastAPI
from fleet_engine.api.routes.backups import router as backups_router
from fleet_engine.api.routes.operations import router as operations_router

app = FastAPI(title="Fleet Engine API")

@app.get("/health")
def health():
    return {"status": "ok"}

app.include_router(operations_router)
app.include_router(backups_router)
