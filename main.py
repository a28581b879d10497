# main.py - FastAPI application entry point
from contextlib import asynccontextmanager
from adapters.api import app
from services.directory import init_directory_services, shutdown_directory_services
from config import settings

@asynccontextmanager
async def lifespan(app):
    """Application startup and shutdown"""
    # Startup
    print("🚀 Starting Location Directory API v1.0...")

    try:
        print(f"📊 Initializing {settings.CATALOG_BACKEND} catalog and geocoder...")
        await init_directory_services(settings)

        print("✅ All services initialized successfully!")
        print(f"🌐 API ready at http://{settings.API_HOST}:{settings.API_PORT}")
        print(f"📚 Documentation at http://{settings.API_HOST}:{settings.API_PORT}/docs")
        print("🔗 Main endpoint:")
        print(f"   - Nearby: GET /filter-nearby?address=...&max_distance=...")
        print("🔗 Other endpoints:")
        print(f"   - Health: GET /health")
        print(f"   - Items: GET|POST /items")

    except Exception as e:
        print(f"❌ Startup failed: {e}")
        raise

    yield

    # Shutdown
    print("🔄 Shutting down services...")
    await shutdown_directory_services()

# Set lifespan for the app
app.router.lifespan_context = lifespan

if __name__ == "__main__":
    import uvicorn

    print("🚀 Starting server...")
    uvicorn.run(
        "main:app",
        host=settings.API_HOST,
        port=settings.API_PORT,
        reload=False,
        workers=1,
        log_level=settings.LOG_LEVEL.lower()
    )
