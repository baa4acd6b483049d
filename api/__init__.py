# AccessHub - HTTP API
# FastAPI application, dependencies, schemas and routers
