import os

os.environ.setdefault("MPLBACKEND", "Agg")

import numpy as np
import pandas as pd
import pytest

from prepare_data import TARGET

ROUTES = ["Asia-Europe", "Intra-EU", "Transpacific"]
MODES = ["Air", "Rail", "Road", "Sea"]
PRODUCTS = ["Electronics", "Furniture", "Pharma"]
MITIGATION = ["Expedite", "None", "Reroute"]
EVENTS = ["Customs Delay", "Port Strike", "Storm"]


def make_shipments(n: int = 600, seed: int = 7) -> pd.DataFrame:
    """Synthetic shipment table with the columns of the real spreadsheet."""
    rng = np.random.default_rng(seed)
    base = rng.integers(3, 30, n)
    scheduled = base + rng.integers(0, 8, n)
    weight = rng.uniform(1, 500, n).round(1)
    cost = (weight * rng.uniform(2, 9, n)).round(2)
    geo = rng.uniform(0, 1, n).round(3)
    weather = rng.uniform(0, 10, n).round(2)
    disrupted = (rng.uniform(size=n) < 0.35).astype(int)
    event = np.where(disrupted == 1, rng.choice(EVENTS, n), "None")

    logit = 1.2 + 0.35 * (scheduled - base) - 1.8 * disrupted - 1.5 * geo - 0.1 * weather
    on_time = (rng.uniform(size=n) < 1 / (1 + np.exp(-logit))).astype(int)

    return pd.DataFrame({
        "Order_ID": [f"ORD{i:05d}" for i in range(n)],
        "Route_Type": rng.choice(ROUTES, n),
        "Transportation_Mode": rng.choice(MODES, n),
        "Product_Category": rng.choice(PRODUCTS, n),
        "Mitigation_Action_Taken": rng.choice(MITIGATION, n),
        "Disruption_Event": event,
        "Scheduled_Lead_Time_Days": scheduled,
        "Base_Lead_Time_Days": base,
        "Order_Weight_Kg": weight,
        "Shipping_Cost_USD": cost,
        "Geopolitical_Risk_Index": geo,
        "Weather_Severity_Index": weather,
        "Std_Has_Disruption": disrupted,
        TARGET: on_time,
    })


@pytest.fixture
def shipments() -> pd.DataFrame:
    return make_shipments()


@pytest.fixture
def shipments_csv(tmp_path, shipments) -> str:
    path = tmp_path / "shipments.csv"
    shipments.to_csv(path, index=False)
    return str(path)


@pytest.fixture
def separable() -> pd.DataFrame:
    """100 rows where x alone separates the classes; noise carries no signal."""
    rng = np.random.default_rng(0)
    x = np.linspace(0, 1, 100)
    return pd.DataFrame({
        "x": x,
        "noise": rng.normal(0, 0.1, 100),
        "y": (x > 0.5).astype(int),
    })


@pytest.fixture
def logistic_data() -> pd.DataFrame:
    rng = np.random.default_rng(11)
    n = 800
    a = rng.normal(size=n)
    b = rng.uniform(0, 1, n)
    p = 1 / (1 + np.exp(-(0.4 + 1.1 * a - 2.0 * b)))
    return pd.DataFrame({"a": a, "b": b, "y": (rng.uniform(size=n) < p).astype(int)})
