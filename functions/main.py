# the following few lines are just to remind me of what commands I need to deploy
# functions/venv/Scripts/activate
# pip install -r functions/requirements.txt

# firebase deploy --only functions
# firebase deploy --only functions:crash_report
# firebase deploy --only functions:notify


from firebase_functions import https_fn, logger
from flask import Request, jsonify
from typing import Optional

# Own imports
from config.loader import get_region
from utils.app_context import AppContext, get_app_context
from utils.crash_utils import respond_to_crash
from utils.data_processing_utils import add_cors_headers, parse_crash_request, parse_notify_request
from utils.errors import CrashResponseError
from utils.notification_utils import send_single_notification

REGION = get_region()


def _error_response(message: str, status: int):
    return add_cors_headers(jsonify({"error": message})), status


def handle_crash_report(request: Request, context: Optional[AppContext] = None):
    """
    Finds the hospital nearest to a crash and alerts the rider's emergency contacts.
    Notification problems never change a successful response.
    """
    if request.method == 'OPTIONS':
        return add_cors_headers(jsonify({})), 204

    try:
        report = parse_crash_request(request)
        context = context or get_app_context()

        outcome = respond_to_crash(report, context)
        resolution = outcome.resolution

        return add_cors_headers(jsonify({
            "success": True,
            "nearestHospital": resolution.facility.to_response(),
            "distance": resolution.distance_km,
        })), 200

    except CrashResponseError as e:
        logger.error(f"Crash report failed ({e.status_code}): {e.message}")
        return _error_response(e.message, e.status_code)
    except Exception as e:
        logger.error(f"Error in crash_report: {str(e)}")
        return _error_response(str(e), 500)


def handle_notify(request: Request, context: Optional[AppContext] = None):
    """Sends a single visible notification to one FCM token."""
    if request.method == 'OPTIONS':
        return add_cors_headers(jsonify({})), 204

    try:
        notify_request = parse_notify_request(request)
        context = context or get_app_context()

        response = send_single_notification(
            notify_request.token,
            notify_request.title,
            notify_request.body,
            transport=context.messaging,
            app=context.app,
        )
        return add_cors_headers(jsonify({"success": True, "response": response})), 200

    except CrashResponseError as e:
        return _error_response(e.message, e.status_code)
    except Exception as e:
        logger.error(f"Error sending message: {str(e)}")
        return _error_response(str(e), 500)


@https_fn.on_request(region=REGION)
def crash_report(request: Request):
    return handle_crash_report(request)


@https_fn.on_request(region=REGION)
def notify(request: Request):
    return handle_notify(request)
