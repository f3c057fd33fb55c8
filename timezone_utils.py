from datetime import datetime, date
import pytz

IST = pytz.timezone('Asia/Kolkata')

def get_ist_time_naive():
    """Get current IST time as naive datetime for database storage"""
    return datetime.now(IST).replace(tzinfo=None)

def get_ist_today() -> date:
    """Get the current calendar date in IST"""
    return datetime.now(IST).date()
