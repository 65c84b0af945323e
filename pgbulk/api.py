from fastapi import FastAPI

from pgbulk.config import Settings
from pgbulk.router.router import IntrospectionRouter

settings = Settings.from_env()

app = FastAPI()
router = IntrospectionRouter(connection_str=settings.database_url, preload=settings.preload)
app.include_router(router)
