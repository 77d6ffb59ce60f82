from sqlalchemy.orm import declarative_base

Base = declarative_base()

# Note: models are registered through app.db.models
# All models must import Base from this module
