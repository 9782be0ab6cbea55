"""
tagtrail

Visitor/session attribution and event recording for NFC/QR tags,
tracked links and video milestones.
"""

from dotenv import find_dotenv, load_dotenv

__version__ = "0.4.0"

# Environment from the nearest .env (searched upward from the working
# directory) so TAGTRAIL_* variables reach settings and uvicorn alike.
# Variables already exported take precedence.
load_dotenv(find_dotenv(usecwd=True), override=False)
