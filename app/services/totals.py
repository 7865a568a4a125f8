from decimal import Decimal


def _service_id(service):
    if isinstance(service, dict):
        return service.get("id")
    return getattr(service, "id", None)


def _field(service, name):
    if isinstance(service, dict):
        return service.get(name)
    return getattr(service, name, None)


def compute_totals(services, selected_ids):
    """
    Aggregate duration (minutes) and price over the selected services.

    ``services`` may hold dicts (API payloads) or ORM rows. Missing durations
    or prices count as zero. Returns ``(total_duration, total_price)``.
    """
    selected = {str(service_id) for service_id in selected_ids or []}

    total_duration = 0
    total_price = Decimal("0")
    for service in services or []:
        if str(_service_id(service)) not in selected:
            continue
        total_duration += int(_field(service, "duration") or 0)
        total_price += Decimal(str(_field(service, "price") or 0))

    return total_duration, total_price
