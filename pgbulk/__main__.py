if __name__ == "__main__":
    import uvicorn

    from pgbulk.config import Settings

    settings = Settings.from_env()
    uvicorn.run(
        "pgbulk.api:app", host=settings.host, port=settings.port, log_level="info"
    )
