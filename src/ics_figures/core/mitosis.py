"""
Mitotic-phase classification from image features.

Workflow: feature scaling -> UMAP projection (visualization only) ->
decision-tree (CART) training on a stratified split -> confusion matrix,
per-class metrics, variable importance and the learned tree rules.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import numpy as np
import pandas as pd
import umap
from pandas import DataFrame, Series
from sklearn.inspection import permutation_importance
from sklearn.metrics import (
    accuracy_score,
    balanced_accuracy_score,
    classification_report,
    confusion_matrix,
)
from sklearn.model_selection import (
    StratifiedKFold,
    cross_val_score,
    train_test_split,
)
from sklearn.preprocessing import MinMaxScaler, RobustScaler, StandardScaler
from sklearn.tree import DecisionTreeClassifier, export_text

from ..config import settings

SCALERS = {
    "standard": StandardScaler,
    "robust": RobustScaler,
    "minmax": MinMaxScaler,
}


def _seed(random_state: Optional[int]) -> int:
    return settings.random_seed if random_state is None else random_state


def prepare_training_data(
    df: DataFrame,
    features: List[str],
    label_col: str = "phase",
    classes: Optional[List[str]] = None,
    dropna: bool = True,
) -> Tuple[DataFrame, Series]:
    """
    Extract the feature matrix and class labels.

    Parameters
    ----------
    df : DataFrame
        Labelled event table.
    features : list
        Feature columns used for classification.
    label_col : str
        Column with the phase label.
    classes : list, optional
        Restrict to these classes (in this order).
    dropna : bool
        Drop rows with missing feature values or labels.

    Returns
    -------
    tuple
        (X, y)
    """
    missing = [c for c in features + [label_col] if c not in df.columns]
    if missing:
        raise KeyError(f"Columns not found: {missing}")
    data = df[features + [label_col]]
    if classes is not None:
        data = data[data[label_col].isin(classes)]
    if dropna:
        n_before = len(data)
        data = data.dropna()
        if len(data) < n_before:
            print(f"Dropped {n_before - len(data)} rows with missing values")
    y = data[label_col].astype(str)
    if y.nunique() < 2:
        raise ValueError(
            f"Need at least two classes in '{label_col}', found "
            f"{sorted(y.unique())}"
        )
    return data[features].astype(float), y


def scale_features(X: DataFrame, method: str = "standard"):
    """
    Scale features with a scikit-learn scaler.

    Returns
    -------
    tuple
        (scaled DataFrame, fitted scaler)
    """
    if method not in SCALERS:
        raise ValueError(
            f"Unknown scaling method: {method}. Use one of {list(SCALERS)}"
        )
    scaler = SCALERS[method]()
    scaled = scaler.fit_transform(X.to_numpy(dtype=float))
    return pd.DataFrame(scaled, index=X.index, columns=X.columns), scaler


def compute_umap(
    X: DataFrame,
    n_neighbors: int = 15,
    min_dist: float = 0.1,
    metric: str = "euclidean",
    random_state: Optional[int] = None,
) -> DataFrame:
    """
    Two-dimensional UMAP embedding of the (scaled) features.

    n_neighbors is capped at n_samples - 1.

    Returns
    -------
    DataFrame
        Columns UMAP1, UMAP2, indexed like X.
    """
    n_samples = len(X)
    if n_samples < 3:
        raise ValueError("UMAP needs at least three samples")
    reducer = umap.UMAP(
        n_neighbors=min(n_neighbors, n_samples - 1),
        min_dist=min_dist,
        metric=metric,
        n_components=2,
        random_state=_seed(random_state),
    )
    embedding = reducer.fit_transform(X.to_numpy(dtype=float))
    return pd.DataFrame(embedding, index=X.index, columns=["UMAP1", "UMAP2"])


def split_data(
    X: DataFrame,
    y: Series,
    test_size: float = 0.3,
    random_state: Optional[int] = None,
    stratify: bool = True,
):
    return train_test_split(
        X,
        y,
        test_size=test_size,
        random_state=_seed(random_state),
        stratify=y if stratify else None,
    )


def train_decision_tree(
    X: DataFrame,
    y: Series,
    max_depth: Optional[int] = None,
    min_samples_leaf: int = 1,
    criterion: str = "gini",
    class_weight: Optional[str] = None,
    ccp_alpha: float = 0.0,
    random_state: Optional[int] = None,
) -> DecisionTreeClassifier:
    model = DecisionTreeClassifier(
        max_depth=max_depth,
        min_samples_leaf=min_samples_leaf,
        criterion=criterion,
        class_weight=class_weight,
        ccp_alpha=ccp_alpha,
        random_state=_seed(random_state),
    )
    model.fit(X, y)
    return model


def evaluate_classifier(
    model,
    X: DataFrame,
    y: Series,
    labels: Optional[List[str]] = None,
) -> Dict:
    """
    Evaluate a fitted classifier.

    Parameters
    ----------
    model : fitted classifier
    X : DataFrame
        Features.
    y : Series
        True labels.
    labels : list, optional
        Class order for the confusion matrix, defaults to model.classes_.

    Returns
    -------
    dict
        confusion_matrix (rows true, columns predicted),
        confusion_matrix_normalized (row-normalized), accuracy,
        balanced_accuracy, report (per-class precision/recall/f1/support),
        predictions.
    """
    labels = list(model.classes_) if labels is None else list(labels)
    predictions = pd.Series(model.predict(X), index=X.index, name="predicted")
    cm = confusion_matrix(y, predictions, labels=labels)
    cm_df = pd.DataFrame(cm, index=labels, columns=labels)
    cm_df.index.name = "true"
    cm_df.columns.name = "predicted"
    row_sums = cm_df.sum(axis=1).replace(0, np.nan)
    cm_norm = cm_df.div(row_sums, axis=0).fillna(0.0)
    report = classification_report(
        y, predictions, labels=labels, output_dict=True, zero_division=0
    )
    report_df = pd.DataFrame(
        {label: report[label] for label in labels}
    ).T.rename_axis("class")
    return {
        "confusion_matrix": cm_df,
        "confusion_matrix_normalized": cm_norm,
        "accuracy": float(accuracy_score(y, predictions)),
        "balanced_accuracy": float(balanced_accuracy_score(y, predictions)),
        "report": report_df,
        "predictions": predictions,
    }


def variable_importance(
    model,
    features: List[str],
    X: Optional[DataFrame] = None,
    y: Optional[Series] = None,
    n_repeats: int = 0,
    random_state: Optional[int] = None,
) -> DataFrame:
    """
    Gini importance of each feature, optionally with permutation importance.

    Permutation importance is computed when X, y are given and n_repeats > 0.
    """
    importance = pd.DataFrame(
        {"feature": features, "importance": model.feature_importances_}
    )
    if n_repeats > 0:
        if X is None or y is None:
            raise ValueError("Permutation importance needs X and y")
        perm = permutation_importance(
            model,
            X,
            y,
            n_repeats=n_repeats,
            random_state=_seed(random_state),
        )
        importance["permutation_mean"] = perm.importances_mean
        importance["permutation_std"] = perm.importances_std
    return importance.sort_values(
        "importance", ascending=False
    ).reset_index(drop=True)


def tree_rules(model: DecisionTreeClassifier, features: List[str]) -> str:
    return export_text(model, feature_names=list(features))


def cross_validate_tree(
    X: DataFrame,
    y: Series,
    cv: int = 5,
    random_state: Optional[int] = None,
    **tree_kwargs,
) -> DataFrame:
    """
    Stratified k-fold accuracies of a decision tree.

    cv is capped at the size of the smallest class (minimum 2).
    """
    smallest = int(y.value_counts().min())
    n_splits = max(2, min(cv, smallest))
    seed = _seed(random_state)
    folds = StratifiedKFold(n_splits=n_splits, shuffle=True, random_state=seed)
    model = DecisionTreeClassifier(random_state=seed, **tree_kwargs)
    scores = cross_val_score(model, X, y, cv=folds, scoring="accuracy")
    return pd.DataFrame(
        {"fold": np.arange(1, len(scores) + 1), "accuracy": scores}
    )


def predict_phases(model, X: DataFrame) -> DataFrame:
    proba = model.predict_proba(X)
    result = pd.DataFrame(
        proba,
        index=X.index,
        columns=[f"p_{c}" for c in model.classes_],
    )
    result.insert(0, "predicted", model.predict(X))
    return result


@dataclass
class MitosisClassification:
    model: DecisionTreeClassifier
    scaler: object
    features: List[str]
    classes: List[str]
    train: Dict
    test: Dict
    importance: DataFrame
    rules: str
    cv_scores: DataFrame
    umap: Optional[DataFrame] = None
    labels: Optional[Series] = None
    params: Dict = field(default_factory=dict)


def run_mitosis_classification(
    df: DataFrame,
    features: List[str],
    label_col: str = "phase",
    classes: Optional[List[str]] = None,
    scaling: str = "standard",
    test_size: float = 0.3,
    max_depth: Optional[int] = 4,
    min_samples_leaf: int = 5,
    criterion: str = "gini",
    class_weight: Optional[str] = None,
    cv: int = 5,
    permutation_repeats: int = 0,
    with_umap: bool = True,
    umap_neighbors: int = 15,
    umap_min_dist: float = 0.1,
    random_state: Optional[int] = None,
) -> MitosisClassification:
    """
    Run the complete mitotic-phase classification.

    Parameters
    ----------
    df : DataFrame
        Labelled event table.
    features : list
        Feature columns.
    label_col : str
        Phase label column.
    classes : list, optional
        Classes to keep, in display order.
    scaling : str
        "standard", "robust" or "minmax".
    test_size : float
        Fraction held out for evaluation.
    max_depth, min_samples_leaf, criterion, class_weight
        Decision tree parameters.
    cv : int
        Number of cross-validation folds on the training set.
    permutation_repeats : int
        Repeats for permutation importance on the test set (0 = off).
    with_umap : bool
        Compute a UMAP embedding of all scaled events.
    random_state : int, optional
        Seed, defaults to settings.random_seed.

    Returns
    -------
    MitosisClassification
    """
    seed = _seed(random_state)
    X, y = prepare_training_data(df, features, label_col, classes)
    X_scaled, scaler = scale_features(X, scaling)
    class_order = (
        [c for c in classes if c in set(y)] if classes else sorted(y.unique())
    )
    print(
        f"Classifying {len(X)} events into {len(class_order)} classes "
        f"using {len(features)} features"
    )

    X_train, X_test, y_train, y_test = split_data(
        X_scaled, y, test_size=test_size, random_state=seed
    )
    tree_params = {
        "max_depth": max_depth,
        "min_samples_leaf": min_samples_leaf,
        "criterion": criterion,
        "class_weight": class_weight,
    }
    model = train_decision_tree(
        X_train, y_train, random_state=seed, **tree_params
    )
    train_eval = evaluate_classifier(model, X_train, y_train, class_order)
    test_eval = evaluate_classifier(model, X_test, y_test, class_order)
    print(
        f"  train accuracy = {train_eval['accuracy']:.3f}, "
        f"test accuracy = {test_eval['accuracy']:.3f}"
    )
    importance = variable_importance(
        model,
        features,
        X_test,
        y_test,
        n_repeats=permutation_repeats,
        random_state=seed,
    )
    cv_scores = cross_validate_tree(
        X_train, y_train, cv=cv, random_state=seed, **tree_params
    )

    embedding = None
    if with_umap:
        embedding = compute_umap(
            X_scaled,
            n_neighbors=umap_neighbors,
            min_dist=umap_min_dist,
            random_state=seed,
        )

    return MitosisClassification(
        model=model,
        scaler=scaler,
        features=list(features),
        classes=class_order,
        train=train_eval,
        test=test_eval,
        importance=importance,
        rules=tree_rules(model, features),
        cv_scores=cv_scores,
        umap=embedding,
        labels=y,
        params=dict(
            tree_params,
            scaling=scaling,
            test_size=test_size,
            random_state=seed,
        ),
    )
