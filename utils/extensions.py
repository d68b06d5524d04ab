from flask import current_app

def get_calendar():
    return current_app.extensions["business_calendar"]

def get_gateway():
    return current_app.extensions["payment_gateway"]
