# Custom exceptions to be used throughout the project.

class DateParseError(Exception):
    """
    To be raised when date text arriving from a form, query string or webhook cannot be turned into a calendar date.
    May be raised under the following circumstances:
        1. Input was empty
        2. Input did not match ISO-8601 date or datetime format
        3. Input matched the format but was not a real date (ex: 2024-02-30)
    """
    def __init__(self, *args):
        super().__init__(*args)

    @property
    def message(self):
        return self.args[0] if self.args else "Invalid date."


class FormValidationError(Exception):
    """
    Raised by the form validators with every problem found in a submission, so the route can flash them all at once.
    """
    def __init__(self, messages):
        if isinstance(messages, str):
            messages = [messages]
        self.messages = list(messages)
        super().__init__("; ".join(self.messages))


class BookingValidationError(Exception):
    """
    Raised on the booking path before any charge is requested:
        1. Requested range includes a day the item is not available
        2. Quote total is not a positive amount
    """
    def __init__(self, *args):
        super().__init__(*args)


class CheckoutError(Exception):
    """
    Raised when the payment provider rejects a request or a checkout session cannot be created.
    """
    def __init__(self, *args):
        super().__init__(*args)
