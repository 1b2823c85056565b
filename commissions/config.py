import os
from datetime import timedelta
from dotenv import load_dotenv

load_dotenv()

class Config:
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "super-secret-change-me")
    SQLALCHEMY_DATABASE_URI = os.getenv("DATABASE_URL", "sqlite:///dev.db")
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "http://localhost:8080, http://127.0.0.1:8080")

    ACCESS_EXPIRES = int(os.getenv("ACCESS_EXPIRES", 86400))
    JWT_ACCESS_TOKEN_EXPIRES = timedelta(seconds=ACCESS_EXPIRES)
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    DEFAULT_MAX_REVISIONS = int(os.getenv("DEFAULT_MAX_REVISIONS", 3))
    DEFAULT_CURRENCY = os.getenv("DEFAULT_CURRENCY", "SAR")
    MAX_PAGE_SIZE = int(os.getenv("MAX_PAGE_SIZE", 100))

class DevelopmentConfig(Config):
    DEBUG = True

class ProductionConfig(Config):
    DEBUG = False

class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    JWT_SECRET_KEY = "testing-secret-key-with-enough-length"
    LOG_LEVEL = "DEBUG"
