import logging
from motor.motor_asyncio import AsyncIOMotorClient
from beanie import init_beanie
from chatfunnel import config
from chatfunnel.models.funnel import FunnelModel
from chatfunnel.models.block import BlockModel
from chatfunnel.models.conversation import ConversationModel
from chatfunnel.models.lead_response import LeadResponseModel
from chatfunnel.models.lead_ticket import LeadTicketModel

logger = logging.getLogger(__name__)

DOCUMENT_MODELS = [FunnelModel, BlockModel, ConversationModel, LeadResponseModel, LeadTicketModel]


async def init_db():
    try:
        logger.info("Initializing database connection...")
        # tz_aware keeps datetimes comparable with the interpreter clock
        client = AsyncIOMotorClient(config.MONGO_URI, tz_aware=True)

        # Test the connection
        await client.admin.command('ping')
        logger.info("MongoDB connection test successful.")

        await init_beanie(database=client[config.DB_NAME], document_models=DOCUMENT_MODELS)
        logger.info("MongoDB connection established and Beanie initialized.")
        return client
    except Exception as e:
        logger.error(f"Database initialization failed: {e}", exc_info=True)
        raise
