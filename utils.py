import pandas as pd
import io # Required for Excel export

from analytics_models import insights_to_records

# --- Data Export Functions ---

def get_filtered_data_as_excel(dfs_to_export_dict):
    """
    Processes a dictionary of dataframes
    and returns an Excel file as a bytes object for download.
    The dictionary format is { "sheet_name": (dataframe, include_index_bool) }

    Only copies a dataframe when datetime columns need converting to plain dates.
    """
    output = io.BytesIO()

    with pd.ExcelWriter(output, engine='xlsxwriter') as writer:
        for sheet_name, (df, include_index) in dfs_to_export_dict.items():

            # Ensure dataframe is not just a placeholder
            if not isinstance(df, pd.DataFrame) or df.empty:
                continue

            df_to_export = df
            datetime_cols = [col for col in df.columns if pd.api.types.is_datetime64_any_dtype(df[col])]

            if datetime_cols:
                df_to_export = df.copy()
                for col in datetime_cols:
                    # Convert to timezone-naive datetime
                    if df_to_export[col].dt.tz is not None:
                        df_to_export[col] = df_to_export[col].dt.tz_localize(None)
                    df_to_export[col] = df_to_export[col].dt.strftime('%Y-%m-%d')

            df_to_export.to_excel(writer, sheet_name=sheet_name, index=include_index)

            # Auto-adjust column widths
            worksheet = writer.sheets[sheet_name]
            offset = 1 if include_index else 0
            for idx, col in enumerate(df_to_export.columns):
                series = df_to_export[col]
                max_len = max(
                    series.astype(str).map(len).max(),  # Data max len
                    len(str(series.name))  # Header len
                ) + 2
                worksheet.set_column(idx + offset, idx + offset, max_len)

    processed_data = output.getvalue()
    return processed_data


def forecast_to_frames(result):
    """
    Flatten a ForecastResult into dataframes.

    Returns:
        dict: {'historical', 'forecast', 'models', 'parameters'} dataframes
    """
    record = result.to_record()

    historical_df = pd.DataFrame(record['historical_data'], columns=['date', 'value'])
    forecast_df = pd.DataFrame(
        record['forecast_data'],
        columns=['date', 'predicted', 'lower_bound', 'upper_bound', 'step']
    )

    model_rows = []
    for candidate in record['model_comparison']:
        row = {
            'model': candidate['name'],
            'description': candidate['description'],
            'status': candidate['status'],
            'selected': candidate['name'] == record['best_model'],
            'error': candidate['error']
        }
        row.update(candidate['backtest_error'] or {})
        model_rows.append(row)
    models_df = pd.DataFrame(model_rows)

    params = dict(record['parameters'])
    params['best_model'] = record['best_model']
    params.update({f"accuracy_{k}": v for k, v in record['model_accuracy'].items()})
    parameters_df = pd.DataFrame(
        [{'parameter': k, 'value': str(v)} for k, v in params.items()]
    )

    return {
        'historical': historical_df,
        'forecast': forecast_df,
        'models': models_df,
        'parameters': parameters_df
    }


def get_forecast_as_excel(result):
    """Excel workbook (bytes) with the history, forecast, model comparison and parameters of a forecast."""
    frames = forecast_to_frames(result)
    return get_filtered_data_as_excel({
        "Forecast": (frames['forecast'], False),
        "Historical": (frames['historical'], False),
        "Model Comparison": (frames['models'], False),
        "Parameters": (frames['parameters'], False)
    })


def insights_to_frame(insights):
    """One row per insight; list fields are joined into readable text."""
    records = insights_to_records(insights)
    for record in records:
        record['evidence'] = "\n".join(record['evidence'])
        record['action_items'] = "\n".join(f"- {item}" for item in record['action_items'])
        record['kpi_predictions'] = ", ".join(f"{k}: {v:+.1f}%" for k, v in record['kpi_predictions'].items())
    return pd.DataFrame(records, columns=[
        'id', 'category', 'priority', 'title', 'description', 'confidence', 'impact_score',
        'evidence', 'action_items', 'kpi_predictions', 'implementation_effort', 'timeline', 'focus_area'
    ])


def get_insights_as_excel(insights):
    """Excel workbook (bytes) with one row per insight."""
    return get_filtered_data_as_excel({"Insights": (insights_to_frame(insights), False)})
