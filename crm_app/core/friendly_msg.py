FRIENDLY_MESSAGES = {
    "ConnectionError": "Unable to connect to a required service. Please try again later.",
    "TimeoutError": "The request took too long. Please try again later.",
    "OperationalError": "Temporary issue while accessing data. Please try again shortly.",
    "IntegrityError": "The record conflicts with existing data. Please refresh and retry.",
    "DBAPIError": "Temporary issue while accessing data. Please try again shortly.",
    "CircuitOpenError": "The service is recovering from errors. Please try again shortly.",
}


def get_friendly_message(error: Exception) -> str:
    for key, msg in FRIENDLY_MESSAGES.items():
        if key.lower() in type(error).__name__.lower():
            return msg
    return "Something went wrong on our end. Please try again."
