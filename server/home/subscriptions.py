class Subscription:
    """Handle for a signal receiver that the owner must dispose of.

    Calling the handle (or ``unsubscribe()``) disconnects the receiver; it is
    safe to call more than once. The handle is also a context manager.
    """

    def __init__(self, signal, receiver, sender=None):
        self.signal = signal
        self.sender = sender
        self._receiver = receiver
        self.active = True
        signal.connect(receiver, sender=sender, weak=False)

    def unsubscribe(self):
        if not self.active:
            return
        self.signal.disconnect(self._receiver, sender=self.sender)
        self.active = False

    def __call__(self):
        self.unsubscribe()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.unsubscribe()
        return False


def subscribe(signal, callback, sender=None, predicate=None):
    """Connect ``callback(instance_or_kwargs)`` to ``signal``.

    For model signals the callback receives the saved instance, otherwise the
    keyword arguments sent with the signal. ``predicate`` filters deliveries.
    """

    def receiver(sender, **kwargs):
        payload = kwargs.get("instance", kwargs)
        if predicate is not None and not predicate(payload):
            return
        callback(payload)

    return Subscription(signal, receiver, sender=sender)
