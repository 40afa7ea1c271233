import os
import uvicorn
from config.environment import Environment

if __name__ == "__main__":
    if not Environment.validate_config():
        print("⚠️ Configuration incomplete, see log for missing settings")

    uvicorn.run(
        "modules.api.app:app",
        host=os.getenv('HOST', '0.0.0.0'),
        port=int(os.getenv('PORT', '8080')),
        reload=Environment.DEBUG_MODE
    )
